"""HTTP API for the LivePoll voting core."""
