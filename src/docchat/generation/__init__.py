"""Answer generation backends."""
