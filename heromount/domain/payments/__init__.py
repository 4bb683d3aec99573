"""Payments domain - card holds through the payment processor"""
