"""Konver console backend"""
