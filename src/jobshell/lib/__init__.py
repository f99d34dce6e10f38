"""Infrastructure shared by the shell runtime: configuration, storage and values."""
