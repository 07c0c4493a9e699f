"""
Repositories for the deal expiration feature.
"""

from .deal_repository import DealRepository, DealRepositoryError, deal_repository
from .member_repository import MemberRepository, MemberRepositoryError, member_repository

__all__ = [
    "DealRepository",
    "DealRepositoryError",
    "MemberRepository",
    "MemberRepositoryError",
    "deal_repository",
    "member_repository",
]
