"""Allow running cloudstamp with ``python -m cloudstamp``."""

from cloudstamp.cli.main import main


if __name__ == "__main__":
    main()
