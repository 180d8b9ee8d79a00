"""Policy snapshot, condition grammar, resolution and rule evaluation."""
