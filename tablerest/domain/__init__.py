"""
Domain package for tablerest.

Exports the resource descriptor types shared by the repositories, the
operation pipeline and the transport layer.
"""

from tablerest.domain.resource import BelongsTo, Column, Resource

__all__ = [
    "BelongsTo",
    "Column",
    "Resource",
]
