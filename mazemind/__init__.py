"""
mazemind - cognitive core of a simulated maze explorer

Memory stream -> retrieval -> reflection -> planning -> decision.
"""

__version__ = "0.1.0"
