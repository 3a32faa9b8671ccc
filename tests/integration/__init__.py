# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Integration tests for the snapshot pipeline.

These tests run the file watcher, background worker and consumer together
against real issues files.
"""
