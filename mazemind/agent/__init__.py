"""Cognitive agent: memory, planning and decision making"""
