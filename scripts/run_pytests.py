#!/usr/bin/env python3
import sys

import pytest

sys.exit(pytest.main(['-q']))
