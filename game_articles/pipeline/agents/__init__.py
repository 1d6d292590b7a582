from .editor import Editor
from .reviewer import Reviewer, ReviewResult
from .scout import Scout
from .specialist import Specialist, SpecialistResult

__all__ = ["Scout", "Editor", "Specialist", "SpecialistResult", "Reviewer", "ReviewResult"]
