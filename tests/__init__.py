# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""
Test suite for nexrest.

Test Structure:
- unit/: Unit tests for individual components, run against both query builders
- utils/: Shared helpers and the blog schema used as fixture data

Running Tests:
- Run all tests: pytest
- Run one component: pytest tests/unit/test_batch_engine.py
- Run against one backend: pytest -k memory
"""
