"""Feed Reader core: settings, feed configuration, logging and errors."""
