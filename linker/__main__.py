"""
Module entry point for: python -m linker

    python -m linker link <pdf_path> <questions_json> [options]
    python -m linker info <pdf_path>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
