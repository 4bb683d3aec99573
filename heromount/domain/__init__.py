"""Booking pipeline domains"""
