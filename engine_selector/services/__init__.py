"""Engine loading, hardware probing and engine selection."""
