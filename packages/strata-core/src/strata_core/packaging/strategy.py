"""Packaging strategy selection."""

from __future__ import annotations

from strata_core.config import KIB, MIB
from strata_core.packaging.models import PackagingStrategy

DEFAULT_INLINE_THRESHOLD_BYTES = 4 * KIB
DEFAULT_EXTERNAL_THRESHOLD_BYTES = 50 * MIB


def select_packaging_strategy(
    size_bytes: int,
    dependency_count: int,
    *,
    inline_threshold_bytes: int = DEFAULT_INLINE_THRESHOLD_BYTES,
    external_threshold_bytes: int = DEFAULT_EXTERNAL_THRESHOLD_BYTES,
) -> PackagingStrategy:
    """Choose how a built package reaches its resource.

    Pure function of artifact metadata:
    - INLINE when strictly below the inline threshold with no dependencies
    - EXTERNAL when strictly above the external threshold
    - ARCHIVE otherwise

    Example:
        >>> select_packaging_strategy(1024, 0)
        <PackagingStrategy.INLINE: 'inline'>
        >>> select_packaging_strategy(1024, 2)
        <PackagingStrategy.ARCHIVE: 'archive'>
    """
    if size_bytes < 0 or dependency_count < 0:
        msg = "size_bytes and dependency_count must be non-negative"
        raise ValueError(msg)
    if size_bytes > external_threshold_bytes:
        return PackagingStrategy.EXTERNAL
    if size_bytes < inline_threshold_bytes and dependency_count == 0:
        return PackagingStrategy.INLINE
    return PackagingStrategy.ARCHIVE
