"""
Exam Proctoring Persistence Layer
Runtime-selectable relational / Oracle storage behind one adapter contract
"""

__version__ = '1.0.0'
