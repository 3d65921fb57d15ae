"""2FA services"""
