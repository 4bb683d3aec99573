"""Notifications domain - send-once email and SMS"""
