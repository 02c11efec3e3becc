"""指数退避

重连延迟 = min(cap, base * factor ** attempt)，再叠加 ±jitter 比例的随机抖动。
rng 可注入，测试无需真实计时器即可断言每一步的延迟。
"""

import random
from collections.abc import Callable


class Backoff:
    """可重置的指数退避计数器

    Args:
        base: 首次延迟（秒）
        factor: 每次失败的放大倍数
        cap: 延迟上限（秒）
        jitter: 抖动比例，0.1 表示 ±10%
        rng: 返回 [0, 1) 随机数的函数
    """

    def __init__(
        self,
        base: float = 1.0,
        factor: float = 2.0,
        cap: float = 30.0,
        jitter: float = 0.1,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if base <= 0 or cap <= 0:
            raise ValueError("base and cap must be positive")
        if factor < 1:
            raise ValueError("factor must be >= 1")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        self.base = base
        self.factor = factor
        self.cap = cap
        self.jitter = jitter
        self._rng = rng
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """自上次 reset() 以来的失败次数"""
        return self._attempt

    def next_delay(self) -> float:
        """返回下一次重连前的等待时间，并推进计数"""
        delay = min(self.cap, self.base * self.factor**self._attempt)
        self._attempt += 1
        if self.jitter:
            delay *= 1 + self.jitter * (2 * self._rng() - 1)
        return min(self.cap, max(0.0, delay))

    def reset(self) -> None:
        """连接成功后调用，下一次失败重新从 base 开始"""
        self._attempt = 0
