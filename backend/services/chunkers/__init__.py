"""Category chunking strategies."""
from typing import Dict

from config import CATEGORY_CHUNK_SIZES, DEFAULT_CHUNK_OVERLAP
from .base import BaseChunker, semantic_overlap, split_into_sentences
from .rules import BoundaryRule, RuleCascade
from .resume import ResumeChunker
from .experience import ExperienceChunker
from .projects import ProjectsChunker
from .communication import CommunicationChunker
from .skills import SkillsChunker


def build_chunkers(oracle) -> Dict[str, BaseChunker]:
    """One chunker per supported category, sized from CATEGORY_CHUNK_SIZES."""
    sizes = CATEGORY_CHUNK_SIZES
    return {
        "resume": ResumeChunker(oracle, sizes["resume"], DEFAULT_CHUNK_OVERLAP),
        "experience": ExperienceChunker(sizes["experience"], DEFAULT_CHUNK_OVERLAP),
        "projects": ProjectsChunker(sizes["projects"], DEFAULT_CHUNK_OVERLAP),
        "communication": CommunicationChunker(sizes["communication"], DEFAULT_CHUNK_OVERLAP),
        "skills": SkillsChunker(sizes["skills"], DEFAULT_CHUNK_OVERLAP),
    }


__all__ = [
    "BaseChunker",
    "BoundaryRule",
    "RuleCascade",
    "ResumeChunker",
    "ExperienceChunker",
    "ProjectsChunker",
    "CommunicationChunker",
    "SkillsChunker",
    "build_chunkers",
    "semantic_overlap",
    "split_into_sentences",
]
