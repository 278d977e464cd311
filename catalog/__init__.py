"""
Book catalog domain: the Book aggregate with its embedded reviews,
MongoDB connection management and repositories.
"""
