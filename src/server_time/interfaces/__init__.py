"""Message contracts between the estimator worker and its coordinator."""
