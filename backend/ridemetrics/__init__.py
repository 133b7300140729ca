"""RideMetrics: activity stream metrics and training load service."""
