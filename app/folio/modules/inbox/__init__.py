"""
Inbox: public contact form submissions and their admin triage.
"""
