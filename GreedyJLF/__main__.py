from __future__ import annotations

from GreedyJLF.cli import main


if __name__ == "__main__":
    main()
