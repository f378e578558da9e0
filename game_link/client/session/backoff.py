# Copyright 2025 The game_link Authors.
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

"""Reconnect backoff calculation.

The delay grows linearly with the number of consecutive failures and is
capped, so a server that stays down is polled at a steady ceiling rate until
the attempt budget runs out.
"""

from dataclasses import dataclass


def calculate_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
  """Calculate the delay before the next reconnect attempt.

  Args:
      attempt: Consecutive failure count (1-indexed)
      base_delay: Delay in seconds after the first failure
      max_delay: Maximum delay cap in seconds

  Returns:
      Delay in seconds

  Raises:
      ValueError: If attempt is less than 1

  Example:
      >>> calculate_backoff(3, 5.0, 30.0)
      15.0
      >>> calculate_backoff(9, 5.0, 30.0)
      30.0
  """
  if attempt < 1:
    raise ValueError(f"attempt must be at least 1, got {attempt}")
  return min(base_delay * attempt, max_delay)


@dataclass(frozen=True)
class BackoffPolicy:
  """Capped linear backoff.

  Attributes:
      base_delay: Delay in seconds after the first failure
      max_delay: Maximum delay cap in seconds
  """
  base_delay: float = 5.0
  max_delay: float = 30.0

  def __post_init__(self):
    if self.base_delay < 0:
      raise ValueError("base_delay cannot be negative")
    if self.max_delay < self.base_delay:
      raise ValueError("max_delay must be >= base_delay")

  def delay(self, attempt: int) -> float:
    """Delay in seconds for the given consecutive failure count."""
    return calculate_backoff(attempt, self.base_delay, self.max_delay)
