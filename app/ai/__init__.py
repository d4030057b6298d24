"""
Certification Workflow Service
AI module — question drafting support.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, usage logging)
    - prompt_registry: built-in + YAML prompt templates
    - assistants: task-specific assistants built on the gateway
"""
