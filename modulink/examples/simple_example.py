"""
Simple example demonstrating the ModuLink pattern.
"""

import asyncio

from modulink import chain, create_context, timing, Middleware


# Define some simple links
def greet_user(ctx):
    name = ctx.get('name', 'World')
    greeting = f"Hello, {name}!"
    print(f"Link: {greeting}")
    return {**ctx, 'greeting': greeting}


async def look_up_title(ctx):
    await asyncio.sleep(0.05)  # pretend to call a directory service
    print("Link: Looked up title")
    return {**ctx, 'title': 'Engineer'}


def format_message(ctx):
    message = f"{ctx['greeting']} ({ctx['title']}, at {ctx['timestamp']})"
    print("Link: Formatted message")
    return {**ctx, 'final_message': message}


# Define middleware
class LoggingMiddleware(Middleware):
    def execute(self, ctx):
        current = ctx.get('_current_link', {})
        print(f"[LOG] Starting {current.get('name', 'Unknown')}")
        return ctx


def main():
    print("=" * 60)
    print("ModuLink Simple Example")
    print("=" * 60)
    print()

    # Build the chain
    greeting_chain = (chain(greet_user, look_up_title, format_message, name='greeting')
        .on_input(LoggingMiddleware())
        .use(timing('greeting')))

    print(f"Chain built: {greeting_chain}")
    print()

    # Execute the chain
    print("Executing chain...")
    print("-" * 60)

    result = greeting_chain.run(create_context({'name': 'Alice'}))

    print("-" * 60)
    print()

    # Check result
    if result.failed:
        print(f"✗ Chain failed: {result.error}")
    else:
        print("✓ Chain executed successfully!")
        print(f"Final message: {result['final_message']}")
        print(f"Took {result['timings']['greeting']['elapsed']:.2f}ms")

    print()
    print("=" * 60)


if __name__ == "__main__":
    main()
