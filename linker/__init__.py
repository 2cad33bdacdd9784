"""
PDF Question Image Linker
=========================
Rebuilds the reading order of exam PDF pages and links embedded images
into the HTML content of the questions they belong to.

Architecture:
    - Operator Interpreter: Walks a page's drawing operators and extracts images
    - Pixel Encoder: Turns raw RGB/RGBA buffers into PNG files
    - Layout: Groups text into lines, finds question anchors, builds paragraphs
    - Region Assigner: Maps images to question bands by vertical position
    - Interleaver: Orders text and image blocks and renders HTML

Version: 1.0.0
"""

__version__ = "1.0.0"
