"""Dependency resolution for agent resources."""

from .resolver import DependencyResolver

__all__ = ['DependencyResolver']
