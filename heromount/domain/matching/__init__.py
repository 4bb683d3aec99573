"""Matching domain"""
