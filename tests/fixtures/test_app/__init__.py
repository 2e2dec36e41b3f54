"""Test application package."""

from .documents import Member, MemberRepository, Order, OrderRepository

__all__ = ["Member", "MemberRepository", "Order", "OrderRepository"]
