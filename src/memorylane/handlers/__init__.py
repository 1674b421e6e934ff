"""Request handlers driving the media pipeline."""
