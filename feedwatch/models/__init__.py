from feedwatch.models.queue import (  # noqa: F401
    ClaimedItem,
    ClassificationResult,
    EnqueueResult,
    PostPayload,
    QueueItem,
    QueueStats,
    QueueStatus,
    ResultRecord,
)
