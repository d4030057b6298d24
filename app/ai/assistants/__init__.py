"""
Certification Workflow Service
AI Assistants package.

Assistants:
    - question_generator: requirement text → draft certification questions
"""

from app.ai.assistants.question_generator import QuestionGenerator

__all__ = [
    "QuestionGenerator",
]
