"""
Conformance testing：record/replay plugins、recordings schema、web server 客户端与 CLI 实现。

说明：
- record/replay 参数通过 session state 传递（`_adk_recordings_config` / `_adk_replay_config`）；
- replay 校验严格且不可恢复：任何不一致都会中止当前 run。
"""
