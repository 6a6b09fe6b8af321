"""
Dissection Grader - automated grading for anatomical identification labs.

This package grades students' structure identifications against accepted
names with tiered matching, records the result atomically, and queues the
grade for passback to the external grade book.
"""

__version__ = "1.0.0"
__author__ = "Dissection Grader Team"
