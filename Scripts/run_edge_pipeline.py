from __future__ import annotations

from Edge_Detection_Pipeline.runner import main


if __name__ == "__main__":
    raise SystemExit(main())
