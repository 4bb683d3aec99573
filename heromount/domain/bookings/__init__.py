"""Bookings domain - booking creation, extension, cancellation and checkout"""
