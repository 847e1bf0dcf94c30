"""
Hadoop cluster auto-deploy over SSH
"""
