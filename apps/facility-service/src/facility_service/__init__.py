"""Care facility directory: facility search and registration."""
