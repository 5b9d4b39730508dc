#!/usr/bin/env python3
"""Start the catalog import worker (poll loop + platform processors)."""

from app.workers.runner import main

if __name__ == "__main__":
    main()
