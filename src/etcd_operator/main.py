"""etcd operator - main entry point."""

from __future__ import annotations

from etcd_operator.cli import main

if __name__ == "__main__":
    main()
