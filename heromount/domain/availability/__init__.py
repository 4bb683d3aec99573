"""Availability domain - free slots from weekly schedules minus existing bookings"""
