"""Test documents and their repositories."""

from .member import Member, MemberRepository
from .nested.order import Order, OrderRepository

__all__ = ["Member", "MemberRepository", "Order", "OrderRepository"]
