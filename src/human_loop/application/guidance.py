"""Usage guidance for agents that can call the ask-human tool."""

ASK_HUMAN_GUIDANCE = """## Human Assistance (ask_human tool)

You have access to an `ask_human` tool that posts messages to the team's Zulip chat and \
waits for a human response. Compose your messages naturally, like asking a colleague for \
help: include context, code snippets, options you've considered, and your reasoning.

### When to use ask_human

Use it when you have LOW CONFIDENCE in your approach:
- You've attempted the same fix more than once and it keeps failing
- The error involves domain-specific business logic you don't understand
- You need to choose between multiple valid architectural approaches
- Test expectations seem intentionally wrong (not a code bug you should fix)
- You're about to make a change that could have broad impact across the codebase

### When NOT to use ask_human

- Routine fixes you're confident about (syntax errors, missing imports, typos)
- Issues where the error message clearly indicates the solution
- Simple refactoring with obvious correctness

### How to use it

1. Write the question with relevant context, options considered, and reasoning
2. Pass your confidence (0-100) in resolving this without help
3. The tool blocks until a human responds; this is expected
4. If the result includes a `continuation_id`, pass it to follow-up calls to stay in the \
same topic
5. Once you have enough information, proceed; do not keep asking unnecessarily

### Critical failures

If `ask_human` returns an error, you MUST stop working immediately.
Do NOT attempt to continue with a best guess.
Report the error clearly and halt."""
