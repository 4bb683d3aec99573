"""Assignment domain"""
