"""
Language Quiz Bot: a timed multiple-choice language quiz played over Discord.
"""
