"""
Version compatibility policy.

One comparison decides what happens when data produced under one schema
version reaches a reader at another: same version is used as is, an older
producer is migrated forward, a newer producer is blocked until the reader
updates. Share links and backup snapshots both go through compare().
"""

from dataclasses import dataclass


MSG_SAME_VERSION = "Backup is fully compatible"
MSG_NEWER_PRODUCER = "Backup from newer app version. Update app to restore fully."
MSG_OLDER_PRODUCER = "Backup from older version. Will be migrated during restore."


@dataclass(frozen=True)
class CompatibilityDecision:
    """
    Outcome of comparing a producer's version to a consumer's version.

    Attributes:
        compatible: Data can be used by the consumer
        requires_update: Consumer must be updated before the data can be used
        data_loss: Fields may be lost if the data is used anyway
        migrate: Data must be migrated forward before use
        message: Human-readable summary
    """

    compatible: bool
    requires_update: bool
    data_loss: bool
    migrate: bool
    message: str


def compare(producer_version: int, consumer_version: int) -> CompatibilityDecision:
    """
    Classify a (producer, consumer) version pair.

    Args:
        producer_version: Schema version the data was written under
        consumer_version: Schema version of the reading store

    Returns:
        CompatibilityDecision - exactly one of same / newer producer / older producer
    """
    if producer_version == consumer_version:
        return CompatibilityDecision(
            compatible=True,
            requires_update=False,
            data_loss=False,
            migrate=False,
            message=MSG_SAME_VERSION,
        )

    if producer_version > consumer_version:
        return CompatibilityDecision(
            compatible=False,
            requires_update=True,
            data_loss=True,
            migrate=False,
            message=MSG_NEWER_PRODUCER,
        )

    return CompatibilityDecision(
        compatible=True,
        requires_update=False,
        data_loss=False,
        migrate=True,
        message=MSG_OLDER_PRODUCER,
    )


def describe_version_pair(producer_version: int, consumer_version: int) -> str:
    """
    Describe what reading producer data at the consumer's version does to it.

    Returns:
        "Perfect compatibility", "Upgraded with defaults", "Partial data loss"
        or "Significant data loss" (producer two or more versions ahead)
    """
    decision = compare(producer_version, consumer_version)
    if decision.migrate:
        return "Upgraded with defaults"
    if not decision.requires_update:
        return "Perfect compatibility"
    if producer_version - consumer_version >= 2:
        return "Significant data loss"
    return "Partial data loss"


def version_matrix(latest_version: int) -> dict:
    """
    Build the full compatibility matrix for versions 1..latest_version.

    Returns:
        Dict keyed "producer->consumer" with description strings
    """
    return {
        f"{producer}->{consumer}": describe_version_pair(producer, consumer)
        for producer in range(1, latest_version + 1)
        for consumer in range(1, latest_version + 1)
    }
