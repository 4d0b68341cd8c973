#!/usr/bin/env python3
"""udptracker - announce a torrent to a UDP tracker."""

from __future__ import annotations

from udptracker.cli.main import main

if __name__ == "__main__":
    main()
