"""Audit trail and error classification helpers"""
